"""
llm-gateway - one contract for text generation across local and hosted backends.
"""

from llm_gateway.adapters import (
    AdapterStatus,
    AnthropicAdapter,
    GeminiAdapter,
    GenerationAdapter,
    OllamaAdapter,
    OpenAIAdapter,
)
from llm_gateway.config import AdapterConfig
from llm_gateway.errors import (
    ConfigurationError,
    GatewayError,
    GatewayTimeoutError,
    MalformedResponseError,
    ProtocolError,
    TransportError,
)
from llm_gateway.messages import ConversationTurn, Role
from llm_gateway.registry import create_adapter, get_adapter

__version__ = "0.1.0"
