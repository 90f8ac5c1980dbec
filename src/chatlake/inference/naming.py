"""Human-readable names for clusters of conversation segments."""

import logging
import re
from typing import Optional, Sequence

from chatlake.providers.base import ModelProvider

logger = logging.getLogger(__name__)

NAME_PROMPT = """Analyze these {count} conversation excerpts and identify what they have IN COMMON:

{samples}

What is the COMMON THEME that connects ALL of these conversations? Think about:
- What domain or subject area do they ALL relate to?
- What activity or goal unites them?
- Is there a specific technology, hobby, project, or topic they ALL share?

Now provide a SHORT name (2-5 words) for this theme.

Rules:
- Return ONLY the theme name, nothing else
- No quotes, no explanation, no punctuation
- The name must apply to ALL samples, not just one or two
- Be specific but inclusive (e.g., "Home Electronics Setup" not "WiFi Configuration" if samples cover various electronics)
- If samples are about a specific project/game/product, name it (e.g., "Black Ember Story Development")
- AVOID generic names like "Technical Questions", "User Help", "Various Topics"
"""

MAX_NAME_LENGTH = 60
SAMPLE_CHARS = 400


def slugify(name: str, max_length: int = 50) -> str:
    """Lower-case, hyphenated, alphanumeric slug of a name."""
    slug = name.lower().replace("...", "")
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug[:max_length].rstrip("-") or "cluster"


def clean_preview(content: Optional[str], max_chars: int = 80) -> str:
    """First line of a text, or "" for JSON-looking content."""
    if not content:
        return ""
    trimmed = content.lstrip()
    if trimmed.startswith("{") or trimmed.startswith("["):
        return ""
    first_line = trimmed.split("\n", 1)[0].strip()
    if len(first_line) > max_chars:
        first_line = first_line[:max_chars] + "..."
    return first_line


class ClusterNamer:
    """
    Names clusters with the provider's text model.

    Falls back to "Topic N" when no model is available, "Cluster N" when
    the model returns nothing usable, and "Mixed Topics N" when the name it
    returns is generic.
    """

    def __init__(self, provider: Optional[ModelProvider], temperature: float = 0.3):
        self.provider = provider
        self.temperature = temperature
        self._available: Optional[bool] = None

    @property
    def llm_available(self) -> bool:
        if self._available is None:
            self._available = self.provider is not None and self.provider.is_available()
            if not self._available:
                logger.warning("Text model not available, using fallback cluster names")
        return self._available

    def name(self, samples: Sequence[str], cluster_label: int, segment_count: int) -> str:
        """
        Name one cluster.

        Args:
            samples: Member segment texts (already sampled)
            cluster_label: Clusterer label, used by the "Topic N" fallback
            segment_count: Cluster size, used by the other fallbacks
        """
        if not samples or not self.llm_available:
            return f"Topic {cluster_label}"

        prompt = NAME_PROMPT.format(
            count=len(samples),
            samples="\n---\n".join(s[:SAMPLE_CHARS] for s in samples),
        )
        raw = self.provider.generate_text(prompt, temperature=self.temperature, max_tokens=30)
        return self._clean(raw, segment_count)

    @staticmethod
    def _clean(raw: Optional[str], segment_count: int) -> str:
        if not raw:
            return f"Cluster {segment_count}"
        name = raw.strip().strip("\"'.\r\n")
        first_line = name.split("\n", 1)[0].strip().strip("\"'.")
        if first_line:
            name = first_line
        if not name or len(name) > MAX_NAME_LENGTH:
            return f"Cluster {segment_count}"
        lowered = name.lower()
        if lowered.startswith("group") or "conversation" in lowered or lowered == "miscellaneous":
            return f"Mixed Topics {segment_count}"
        return name
