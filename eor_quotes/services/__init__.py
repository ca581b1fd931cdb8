"""Services — LegalDataService, GroqService and the enhancement prompt builder."""

from eor_quotes.services.legal_data_service import LegalDataService
from eor_quotes.services.llm_service import GroqService, get_llm_service
from eor_quotes.services.prompt_engine import build_enhancement_prompt, build_system_prompt

__all__ = [
    "LegalDataService",
    "GroqService",
    "get_llm_service",
    "build_enhancement_prompt",
    "build_system_prompt",
]
