"""External adapters for the roadcall orchestration layer.

This package contains all external dependencies (httpx, the openai SDK,
asyncio scheduling, the interactive CLI) and provides implementations of
the core port interfaces.

Adapter Organization:

- providers/: AI backends (Azure AI Foundry agent, Azure OpenAI, GitHub Models)
- scheduler/: Periodic provider health monitor
- cli/: Command-line interface commands
"""
