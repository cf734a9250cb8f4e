"""Core session orchestration: provisioning, webhooks, tokens and lifecycle."""
