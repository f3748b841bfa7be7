"""
Model invocation for snapshot generation.

Modules
-------
prompts   : forced-output JSON schema, system prompt, user and repair prompts.
extract   : ContentBlock variants + ProviderResponse + extract_candidate_output()
            + extract_json_text() — pure parsing, no I/O.
transport : AnthropicTransport — one Messages API call with bounded retry on
            network errors, HTTP 429 and 5xx.
client    : GenerationClient — truncation retry, validation, bounded repair
            loop, diagnostics on final failure.
"""
