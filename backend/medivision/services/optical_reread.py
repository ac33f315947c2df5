"""
Optical re-read collaborator.
Asks a vision model to transcribe the ink inside one bounding box of the
prescription photo. The verifier only calls this as an escalation path when
the reference search stays inconclusive.
"""

import logging
from typing import Optional, Protocol, Sequence

import openai
from openai import OpenAI

from medivision.config import Config

logger = logging.getLogger("medivision.reread")

ILLEGIBLE_SENTINEL = "Illegible / Confidence Too Low"
UNAVAILABLE = "N/A"

REREAD_PROMPT = (
    "Transcribe the medication name written at coordinates "
    "y:[{ymin}, {ymax}], x:[{xmin}, {xmax}] (normalized 0-1000 image space). "
    "Output the drug name only. If the handwriting in that region cannot be "
    "read with confidence, output exactly: " + ILLEGIBLE_SENTINEL
)


class RegionReReader(Protocol):
    def re_read_region(self, image_base64: str, bounding_box: Sequence[float]) -> str: ...


class OpenAIRegionReReader:
    """Region transcription through an OpenAI vision model."""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None,
                 mime_type: str = "image/jpeg"):
        self._client = client
        self.model = model or Config.REREAD_MODEL_NAME
        self.mime_type = mime_type

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=Config.OPENAI_API_KEY)
        return self._client

    def re_read_region(self, image_base64: str, bounding_box: Sequence[float]) -> str:
        """Transcription, the illegible sentinel, or "N/A" when the model is unavailable."""
        if not image_base64 or not bounding_box or len(bounding_box) != 4:
            return UNAVAILABLE
        ymin, xmin, ymax, xmax = bounding_box
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": REREAD_PROMPT.format(ymin=ymin, xmin=xmin, ymax=ymax, xmax=xmax)},
                        {"type": "image_url", "image_url": {"url": f"data:{self.mime_type};base64,{image_base64}"}},
                    ],
                }],
                temperature=0,
                max_tokens=50,
            )
        except openai.OpenAIError as exc:
            logger.warning("Optical re-read failed: %s", type(exc).__name__)
            return UNAVAILABLE
        text = (response.choices[0].message.content or "").strip()
        return text or UNAVAILABLE
