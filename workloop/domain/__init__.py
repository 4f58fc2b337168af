"""Pure logic: plan parsing, verification parsing, loop signals and prompts."""
