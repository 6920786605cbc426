"""Provider adapters for AI-powered truck diagnosis.

Implementations cover three backend styles:
- Agent conversation (Azure AI Foundry Agents)
- Single completion (Azure OpenAI)
- REST inference (GitHub Models)
"""
