"""
Prompt construction, response parsing and deterministic post-processing
of generated platform metadata.
"""

from typing import Iterable, List

from ..api import InvalidResponseError
from ..models import GenerationConfig, Platform, PlatformMetadata

TITLE_MARKER = "TITLE_AI:"
KEYWORDS_MARKER = "KEYWORDS_AI:"
DESCRIPTION_MARKER = "DESCRIPTION_AI:"


def build_prompt(filename: str, platform: Platform, config: GenerationConfig) -> str:
    """Render the instruction text sent along with an image."""
    platform = Platform(platform)
    return f"""[[PROMPT_START]]
PLATFORM: {platform.value}
IMAGE_FILENAME: {filename}
CONSTRAINTS_FOR_GENERATION (ADHERE STRICTLY TO THESE NUMBERS):
Title_Words_Min: {config.min_title_words}
Title_Words_Max: {config.max_title_words}
Keywords_Count_Min: {config.min_keywords}
Keywords_Count_Max: {config.max_keywords}
Description_Words_Min: {config.min_description_words}
Description_Words_Max: {config.max_description_words}
---
INSTRUCTIONS:
1. Analyze this image carefully and generate a COMPLETE, DESCRIPTIVE title that fully describes what you see.
2. The title should be between {config.min_title_words} and {config.max_title_words} words.
3. Generate a comprehensive list of {config.min_keywords} to {config.max_keywords} relevant keywords that describe the image content, style, colors, objects, concepts, and themes.
4. Generate a detailed description between {config.min_description_words} and {config.max_description_words} words.
5. Generate ONLY based on what you see in the image - do not include any external text or user inputs.

TASK: Analyze this image and provide complete metadata.

OUTPUT_FORMAT (EXACTLY AS FOLLOWS, EACH ON A NEW LINE, NO EXTRA TEXT OR INTRODUCTIONS):
{TITLE_MARKER} [Generated Title Here]
{KEYWORDS_MARKER} [keyword1,keyword2,keyword3,...,keywordN]
{DESCRIPTION_MARKER} [Generated Description Here]
[[PROMPT_END]]"""


def split_keywords(text: str) -> List[str]:
    return [k.strip() for k in text.split(",") if k.strip()]


def parse_response(text: str) -> PlatformMetadata:
    """
    Extract the labelled lines from a model response.

    Lines may appear in any order and be surrounded by unrelated text; only
    the presence of each marker matters. Raises ``InvalidResponseError`` if
    none of the markers is present.
    """
    title = ""
    keywords: List[str] = []
    description = ""
    found = False

    for line in text.splitlines():
        if not line.strip():
            continue
        if TITLE_MARKER in line:
            title = line.split(TITLE_MARKER, 1)[1].strip()
            found = True
        elif KEYWORDS_MARKER in line:
            keywords = split_keywords(line.split(KEYWORDS_MARKER, 1)[1])
            found = True
        elif DESCRIPTION_MARKER in line:
            description = line.split(DESCRIPTION_MARKER, 1)[1].strip()
            found = True

    if not found:
        raise InvalidResponseError("Response did not contain any metadata markers")

    return PlatformMetadata(title=title, keywords=keywords, description=description)


def dedupe_keywords(keywords: Iterable[str]) -> List[str]:
    """Drop case-insensitive duplicates, keeping the first spelling seen."""
    seen = set()
    result = []
    for keyword in keywords:
        folded = keyword.casefold()
        if folded not in seen:
            seen.add(folded)
            result.append(keyword)
    return result


def truncate_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) > max_words:
        return " ".join(words[:max_words])
    return text


def post_process(
    metadata: PlatformMetadata, config: GenerationConfig
) -> PlatformMetadata:
    """
    Apply prefix and suffix injection, then the configured length limits.

    Args:
        metadata: Metadata as parsed from the model response
        config: Bounds and injection strings

    Returns:
        PlatformMetadata: A new, post-processed instance
    """
    title = metadata.title
    prefix = config.title_prefix.strip()
    if prefix:
        title = f"{prefix} {title}" if title else prefix

    keywords = list(metadata.keywords)
    if config.keyword_suffix.strip():
        keywords.extend(split_keywords(config.keyword_suffix))
    keywords = dedupe_keywords(keywords)[: config.max_keywords]

    return PlatformMetadata(
        title=truncate_words(title, config.max_title_words),
        keywords=keywords,
        description=truncate_words(metadata.description, config.max_description_words),
    )
