"""Assistant orchestration: attachments, tools, the agentic loop and streaming."""
