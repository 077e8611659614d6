# Services package init
"""
LifeSync Backend: Services Layer
==================================

Service Inventory (leaves first):
    - transport:            HttpTransport / HttpxTransport (one HTTP exchange)
    - error_classifier:     upstream outcome → ErrorKind + retry verdict
    - circuit_breaker:      per-gateway Closed/Open/HalfOpen state
    - usage_stats:          request/token/error counters, rolling latency
    - api_client:           ResilientApiClient (timeout, retry, backoff, breaker)
    - llm_base:             LLMService interface and its data types
    - chat_gateway:         ChatCompletionGateway (OpenRouter wire contract)
    - idempotency_store:    (user, key) → report mapping with 24h expiry
    - quota_guard:          weekly on-demand limit in the user's timezone
    - user_context_service, note_reader, report_store: persistence collaborators
    - report_orchestrator:  the on-demand report use case
"""
