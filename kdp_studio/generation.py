import json
import logging
import math

from .config import get_settings
from .models import BookOutline

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """An external text/image generation call failed."""


# ====== LOOKUP TABLES ======

GENRE_GUIDELINES = {
    "Fiction": """
- Strong character development and emotional arcs
- Compelling plot with rising action, climax, and resolution
- Rich dialogue and descriptive scenes
- Consistent point of view and narrative voice""",
    "Non-Fiction": """
- Clear thesis or central argument
- Well-researched facts and examples
- Logical progression of ideas
- Actionable insights and takeaways""",
    "Mystery": """
- Intriguing mystery introduced early
- Red herrings and clues planted throughout
- Gradual revelation of information
- Satisfying resolution that ties up loose ends""",
    "Romance": """
- Strong emotional connection between characters
- Romantic tension and obstacles
- Character growth through relationship
- Satisfying romantic resolution""",
    "Fantasy": """
- Rich world-building and magic systems
- Heroic journey or quest structure
- Supernatural elements integrated naturally
- Epic scope with high stakes""",
    "Sci-Fi": """
- Scientifically plausible technology
- Exploration of future implications
- Social commentary through futuristic lens
- Logical consequences of technological advancement""",
    "Thriller": """
- Fast-paced, high-stakes action
- Constant tension and suspense
- Life-or-death consequences
- Plot twists and unexpected revelations""",
    "Self-Help": """
- Practical, actionable advice
- Personal anecdotes and case studies
- Step-by-step methodologies
- Measurable outcomes and results""",
    "Business": """
- Industry insights and trends
- Real-world case studies
- Strategic frameworks and models
- Practical implementation guidance""",
}

LENGTH_SPECIFICATIONS = {
    "Novella (20,000-40,000 words)": {"chapters": 8, "words_per_chapter": 3500},
    "Short Novel (40,000-60,000 words)": {"chapters": 12, "words_per_chapter": 4500},
    "Standard Novel (60,000-80,000 words)": {"chapters": 16, "words_per_chapter": 4500},
    "Long Novel (80,000+ words)": {"chapters": 20, "words_per_chapter": 4500},
    "Short Guide (5,000-15,000 words)": {"chapters": 6, "words_per_chapter": 2000},
    "Comprehensive Guide (15,000-30,000 words)": {"chapters": 10, "words_per_chapter": 2500},
}
DEFAULT_LENGTH_SPECIFICATION = {"chapters": 12, "words_per_chapter": 3000}


def get_genre_guidelines(genre):
    return GENRE_GUIDELINES.get(genre, GENRE_GUIDELINES["Fiction"])


def get_length_specification(target_length):
    return LENGTH_SPECIFICATIONS.get(target_length, DEFAULT_LENGTH_SPECIFICATION)


def parse_json_reply(text):
    """Parse a JSON reply, tolerating a markdown code fence around it."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else cleaned[3:]
        cleaned = cleaned.rsplit("```", 1)[0]
    return json.loads(cleaned or "{}")


# ====== SERVICE ======

class GenerationService:
    """One-shot wrappers around the OpenAI chat and image APIs."""

    def __init__(self, client=None, settings=None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key or "missing-key",
                timeout=self.settings.ai_timeout,
                max_retries=self.settings.ai_max_retries,
            )
        return self._client

    async def _chat(self, system_message, prompt, max_tokens, json_mode=False):
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(
            model=self.settings.text_model,
            messages=[
                {"role": "system", "content": system_message},
                {"role": "user", "content": prompt},
            ],
            max_completion_tokens=max_tokens,
            **kwargs,
        )
        return response.choices[0].message.content or ""

    async def generate_book_outline(self, request) -> BookOutline:
        guidelines = get_genre_guidelines(request.genre)
        length = get_length_specification(request.target_length)
        chapters = length["chapters"]
        words = length["words_per_chapter"]

        prompt = f"""Create a comprehensive {request.genre} book outline for "{request.topic}".

TARGET SPECIFICATIONS:
- Length: {request.target_length} ({chapters} chapters, ~{words} words each)
- Style: {request.writing_style}
- Genre: {request.genre}

GENRE REQUIREMENTS:
{guidelines}

OUTLINE STRUCTURE:
Create {chapters} engaging chapters that follow a compelling narrative arc. Each chapter should:
- Have a compelling hook and purpose
- Advance the overall story/argument
- End with momentum that leads to the next chapter
- Be substantial enough for {words} words

Return ONLY valid JSON in this exact format:
{{
  "chapters": [
    {{
      "title": "Compelling Chapter Title",
      "description": "Detailed 2-3 sentence description covering main events, conflicts, and purpose"
    }}
  ]
}}"""

        try:
            reply = await self._chat(
                "You are an expert book editor and publishing consultant. Generate detailed, engaging "
                "book outlines that would appeal to readers in the specified genre.",
                prompt, 2000, json_mode=True,
            )
            return BookOutline.model_validate(parse_json_reply(reply))
        except Exception as e:
            logger.error(f"Outline generation error: {e}")
            raise GenerationError(f"Failed to generate book outline: {e}") from e

    async def generate_chapter_content(self, chapter_title, chapter_description, book_context,
                                       writing_style, target_word_count=2000):
        prompt = f"""Write a complete chapter for a book with the following details:
Chapter Title: {chapter_title}
Chapter Description: {chapter_description}
Book Context: {book_context}
Writing Style: {writing_style}
Target Word Count: {target_word_count} words

Write engaging, well-structured content that flows naturally and fits the chapter description."""

        try:
            return await self._chat(
                "You are a professional author who writes engaging, well-structured chapters. "
                "Focus on creating compelling content that keeps readers engaged.",
                prompt, min(4000, math.ceil(target_word_count * 1.5)),
            )
        except Exception as e:
            logger.error(f"Chapter generation error: {e}")
            raise GenerationError(f"Failed to generate chapter content: {e}") from e

    async def generate_book_description(self, title, genre, outline: BookOutline):
        chapter_summary = ". ".join(ch.description for ch in outline.chapters[:3])
        prompt = f"""Write a compelling book description for "{title}", a {genre} book.
Here's a summary of the first few chapters: {chapter_summary}

Create an engaging description that would attract readers and work well for Amazon KDP.
Focus on the hook, main conflict, and what makes this book special.
Keep it between 150-250 words."""

        try:
            return await self._chat(
                "You are a marketing expert specializing in book descriptions that convert browsers into buyers.",
                prompt, 500,
            )
        except Exception as e:
            logger.error(f"Description generation error: {e}")
            raise GenerationError(f"Failed to generate book description: {e}") from e

    async def generate_keywords(self, title, genre, description):
        prompt = f"""Generate SEO keywords for a {genre} book titled "{title}".
Book description: {description}

Provide 10-15 relevant keywords that would help this book be discovered on Amazon KDP.
Return as JSON object: {{"keywords": ["keyword1", "keyword2", ...]}}."""

        try:
            reply = await self._chat(
                "You are an Amazon KDP marketing expert who specializes in keyword research for book discovery.",
                prompt, 300, json_mode=True,
            )
            keywords = parse_json_reply(reply).get("keywords") or []
            return [str(k) for k in keywords]
        except Exception as e:
            logger.error(f"Keyword generation error: {e}")
            raise GenerationError(f"Failed to generate keywords: {e}") from e

    async def generate_book_cover(self, title, author, genre, style):
        prompt = f"""Create a professional book cover for "{title}" by {author}.
Genre: {genre}
Style: {style}

Design should be eye-catching, professional, and suitable for Amazon KDP.
Include the title prominently and author name.
Make it visually appealing for the {genre} genre."""

        try:
            response = await self.client.images.generate(
                model=self.settings.image_model,
                prompt=prompt,
                n=1,
                size="1024x1024",
                quality="standard",
            )
            url = response.data[0].url if response.data else None
            return {"url": url or ""}
        except Exception as e:
            logger.error(f"Cover generation error: {e}")
            raise GenerationError(f"Failed to generate book cover: {e}") from e

    async def analyze_document(self, text, filename):
        """Clean up and summarise extracted text. Falls back to the input on any failure."""
        prompt = f"""Analyze and extract key information from this document content:
File: {filename}
Content: {text}

Provide a summary of the main topics and themes.
Return as JSON: {{"text": "full cleaned text", "summary": "brief summary"}}"""

        try:
            reply = await self._chat(
                "You are a document analysis expert. Extract and summarize text content effectively.",
                prompt, 1500, json_mode=True,
            )
            result = parse_json_reply(reply)
            return {
                "text": result.get("text") or text,
                "summary": result.get("summary") or "Document content extracted",
            }
        except Exception as e:
            logger.warning(f"Document analysis skipped for {filename}: {e}")
            return {"text": text, "summary": "Document content extracted without AI processing"}
