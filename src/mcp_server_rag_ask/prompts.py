"""LLM prompts for cited answers and follow-up questions."""

from collections.abc import Sequence
from typing import Literal

from .models import AskMode, TextSource

PromptKind = Literal["answer", "related"]

RAG_QUERY_PROMPT = """You are a large language AI assistant. You are given a user question, and please write a clean, concise and accurate answer to the question. You will be given a set of related contexts to the question, each starting with a reference number like [citation:x], where x is a number. Please use the context and cite the context at the end of each sentence if applicable.

Your answer must be correct, accurate and written by an expert using an unbiased and professional tone. Please limit to 1024 tokens. Do not give any information that is not related to the question, and do not repeat. Say "information is missing on" followed by the related topic, if the given context do not provide sufficient information.

Please cite the contexts with the reference numbers, in the format [citation:x]. If a sentence comes from multiple contexts, please list all applicable citations, like [citation:3][citation:5]. Other than code and specific names and citations, your answer must be written in the same language as the question.

Here are the set of contexts:

{context}

Remember, don't blindly repeat the contexts verbatim. And here is the user question:
"""

DEEP_QUERY_PROMPT = """You are a research analyst. You are given a user question together with a set of contexts, each starting with a reference number like [citation:x], where x is a number. Write a thorough, well-structured answer in markdown.

Guidelines:
- Start with a short direct answer, then expand with sections that cover background, key facts, differing viewpoints and open issues
- Cite the contexts at the end of each sentence that relies on them, in the format [citation:x]; list every applicable citation, like [citation:2][citation:7]
- Compare and reconcile the contexts when they disagree, and say so when they do
- Say "information is missing on" followed by the topic when the contexts are insufficient
- Other than code, specific names and citations, write in the same language as the question

Here are the set of contexts:

{context}

And here is the user question:
"""

MORE_QUESTIONS_PROMPT = """You are a helpful assistant that helps the user to ask related questions, based on user's original question and the related contexts. Please identify worthwhile topics that can be follow-ups, and write questions no longer than 20 words each. Please make sure that specifics, like events, names, locations, are included in follow up questions so they can be asked standalone. For example, if the original question asks about "the Manhattan project", in the follow up question, do not just say "the project", but use the full name "the Manhattan project". Your related questions must be in the same language as the original question.

Here are the contexts of the question:

{context}

Remember, based on the original question and related contexts, suggest three such further questions. Do NOT repeat the original question. Each related question should be no longer than 20 words. Return one question per line, without numbering. Here is the original question:
"""


def format_citations(contexts: Sequence[TextSource]) -> str:
    """Render evidence as numbered citation blocks, numbering from 1 in list order."""
    return "\n\n".join(f"[citation:{index}] {item.content}" for index, item in enumerate(contexts, start=1))


def select_template(kind: PromptKind, mode: AskMode = AskMode.SIMPLE) -> str:
    if kind == "related":
        return MORE_QUESTIONS_PROMPT
    if mode == AskMode.DEEP:
        return DEEP_QUERY_PROMPT
    return RAG_QUERY_PROMPT


def build_messages(
    query: str,
    contexts: Sequence[TextSource],
    kind: PromptKind,
    mode: AskMode = AskMode.SIMPLE,
) -> list[dict[str, str]]:
    """Build the single user-role message sent for answer or related-question generation."""
    system = select_template(kind, mode).format(context=format_citations(contexts))
    return [{"role": "user", "content": f"{system} {query}"}]
