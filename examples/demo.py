#!/usr/bin/env python3
"""Demo: Using promptfit as a Python library.

Builds a chat prompt with a mandatory system message, a conversation
history that loses its oldest turns first, and a retrieval block that is
filled at render time and capped at a fixed size.
"""

import asyncio

from promptfit import (
    CancellationToken,
    CharRatioMeasurer,
    Container,
    Leaf,
    Message,
    PriorityList,
    PromptRenderer,
    PruneDirection,
    SizeCache,
)

HISTORY = [
    ("user", "How do I read a file line by line in Python?"),
    ("assistant", "Open it in a with-block and iterate over the file object."),
    ("user", "And if the file is huge?"),
    ("assistant", "Iteration is lazy, so memory stays flat whatever the size."),
]

DOCUMENTS = [
    "Files are iterable; each iteration yields one line including its newline.",
    "The with statement closes the file even if the body raises.",
    "Use encoding='utf-8' explicitly to avoid platform-dependent defaults.",
    "readlines() loads every line into memory at once.",
]


async def fetch_documents(ctx):
    # Stand-in for a search call; runs concurrently with sibling prepares.
    await asyncio.sleep(0.01)
    return DOCUMENTS


def fill_documents(documents, ctx):
    # Offer everything; the hard cap and eviction decide what survives.
    return [Leaf(doc, key=f"doc-{i}") for i, doc in enumerate(documents)]


def build_prompt(question: str) -> Container:
    return Container([
        Message("system", "You are a concise Python tutor.", mandatory=True),
        PriorityList(
            [Message(role, text) for role, text in HISTORY],
            key="history",
            priority=500,
            prune=PruneDirection.KEEP_NEWEST,
            positional=True,
        ),
        Container(
            key="docs",
            role="system",
            priority=100,
            flex_grow=1,
            hard_cap=40,
            prepare=fetch_documents,
            expand=fill_documents,
        ),
        Message("user", question, mandatory=True),
    ])


async def main():
    # One cache for the whole process; trees are rebuilt per request.
    cache = SizeCache(capacity=1024)
    renderer = PromptRenderer(CharRatioMeasurer(), cache)

    for budget in (200, 80):
        print(f"\n--- Budget {budget} ---")
        token = CancellationToken()
        token.cancel_after(5.0)
        result = await renderer.render(build_prompt("Is readlines() a good idea?"), budget, token)
        for message in result.to_chat():
            print(f"  [{message['role']}] {message['content'][:70]}")
        print()
        print(result.summary())

    print(f"\nCache: {cache.stats()}")


if __name__ == "__main__":
    asyncio.run(main())
