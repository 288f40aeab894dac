"""Prompt templates for retrieval-augmented generation."""

RAG_SYSTEM = """You are a precise, factual assistant. Answer questions using ONLY the provided evidence.
Rules:
- Cite evidence using [1], [2], etc. markers matching the evidence numbers.
- If the evidence doesn't contain enough information, say so clearly.
- Never make up information not present in the evidence.
- Be concise and direct."""

RAG_USER_PROMPT = """Question: {query}

Evidence:
{evidence_block}

Provide a clear, well-cited answer based on the evidence above."""

NO_EVIDENCE_BLOCK = "(no evidence was retrieved)"
