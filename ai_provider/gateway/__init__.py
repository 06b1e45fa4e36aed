"""Provider gateway layer.

Routes a canonical "ask a model" request across an ordered list of
provider:model candidates with:
  - Provider Clients (pooled HTTP transport per backend)
  - Provider Adapters (canonical <-> native wire shapes)
  - Stream Transformer (native SSE -> canonical content/error/end events)
  - Event Codec (SSE framing, both directions)
  - AiGateway router (sequential fallback, last-error-wins)
"""
