"""
Ingestion layer — upstream feature feed clients and the stub seeder.

Submodules:
  feature_provider  — HTTP JSON daily-feature feed (retries, payload validation)
  token_cache       — bearer token cache: memory → shared table → token endpoint
  stub_features     — deterministic synthetic feature rows for local runs

Credential placement (.env, gitignored):
  DATA_PROVIDER_API_KEY        — sent as ``x-api-key`` when set
  DATA_PROVIDER_CLIENT_ID      — client-credentials grant (with token_url)
  DATA_PROVIDER_CLIENT_SECRET  — client-credentials grant (with token_url)
"""
