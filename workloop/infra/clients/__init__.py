"""External service clients.

- anthropic_client: AsyncAnthropic factory and ModelClient implementation
"""

from workloop.infra.clients.anthropic_client import (
    AnthropicModelClient,
    create_anthropic_client,
)

__all__ = ["AnthropicModelClient", "create_anthropic_client"]
