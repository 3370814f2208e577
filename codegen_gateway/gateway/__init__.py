"""Provider Adapter Gateway.

Async infrastructure for relaying code generation prompts to LLM
providers with:
  - Provider Adapters (OpenAI, Groq, Mistral, Anthropic, Google, Ollama)
  - Provider Registry (id → singleton adapter)
  - Retry Executor (exponential backoff on 429/5xx)
  - SSE Streaming Decoder (chunk-boundary safe)
  - Fixed-window per-caller Rate Limiter
  - Error taxonomy with credential redaction
"""
