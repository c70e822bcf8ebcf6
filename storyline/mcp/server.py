from __future__ import annotations

from uuid import UUID

from fastmcp import FastMCP

from storyline.api.feed_service import get_topic_stories
from storyline.pipeline.duplicates import detect_duplicates

SERVER_TITLE = "Storyline"
SERVER_INSTRUCTIONS = (
    "Use topic_stories to read the published story feed of a topic (by slug or id). "
    "Use find_duplicates to list likely duplicates of a topic article."
)

mcp = FastMCP(
    name=SERVER_TITLE,
    instructions=SERVER_INSTRUCTIONS,
    version="1",
)


def _bounded(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, 100)), max(0, offset)


def topic_stories_text(topic: str, keywords: list[str] | None = None, limit: int = 10, offset: int = 0) -> str:
    bounded_limit, bounded_offset = _bounded(limit, offset)
    response = get_topic_stories(topic, keywords=keywords, limit=bounded_limit, offset=bounded_offset)

    llm_results = ""
    for story in response.stories:
        llm_results += f"## [{story.title}]({story.source_url})\n"
        for slide in story.slides:
            llm_results += f"{slide.slide_number}. {slide.content}\n"
        llm_results += "\n"

    return llm_results.strip()


def duplicates_text(topic_article_id: str, topic_id: str | None = None) -> str:
    matches = detect_duplicates(UUID(topic_article_id), UUID(topic_id) if topic_id else None)
    if not matches:
        return "No duplicates found."

    return "\n".join(
        f"{match.duplicate_id} {match.detection_method} {match.similarity_score:.2f}" for match in matches
    )


@mcp.tool(name="topic_stories", description="Read published stories for a topic, optionally filtered by keyword.")
def topic_stories(topic: str, keywords: list[str] | None = None, limit: int = 10, offset: int = 0) -> str:
    """Render a topic's story feed as markdown."""
    return topic_stories_text(topic, keywords, limit, offset)


@mcp.tool(name="find_duplicates", description="List likely duplicates of a topic article.")
def find_duplicates(topic_article_id: str, topic_id: str | None = None) -> str:
    """Run duplicate detection for one topic article; omit topic_id for a global scan."""
    return duplicates_text(topic_article_id, topic_id)


if __name__ == "__main__":
    mcp.run("http")
