"""
OpenAI-compatible chat completions proxy for Tencent Yuanbao.

This package contains:
- settings: static process configuration
- logging_config: shared logging setup
- messages: chat message model, model ids and semantic completion events
- sse: server-sent event line decoder
- upstream: Yuanbao HTTP identity, request body and SSE stream opening
- translator: upstream frame classification into completion events
- completion: per-request orchestration (background translator + channel)
- openai_format: OpenAI chat.completion / chunk serialization
- routes: FastAPI app factory and HTTP endpoints
"""
