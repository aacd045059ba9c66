# scripts/testing/test_document_analyzer.py
import base64
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as google_exceptions

from heather_main.lib.document_analyzer import NO_ANALYSIS, HealthDocumentAnalyzer
from heather_main.lib.errors import AnalysisError, ConfigurationError
from heather_main.lib.utils import decode_base64_payload, exponential_backoff_retry

PDF_B64 = base64.b64encode(b"%PDF-1.4 fake report").decode()


class FakeGeminiModel:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def generate_content_async(self, contents, generation_config=None):
        self.calls.append((contents, generation_config))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(text=outcome)


def make_analyzer(outcomes):
    model = FakeGeminiModel(outcomes)
    return HealthDocumentAnalyzer(model=model, base_delay=0), model


async def test_analysis_sends_prompt_and_pdf():
    analyzer, model = make_analyzer(["1. Summary: cholesterol slightly elevated"])

    result = await analyzer.analyze("Recent blood work", PDF_B64, "labs.pdf")

    assert result.analysis.startswith("1. Summary")
    assert result.model_dump(by_alias=True)["fileName"] == "labs.pdf"
    contents, config = model.calls[0]
    assert '"Recent blood work"' in contents[0]
    assert contents[1] == {"mime_type": "application/pdf", "data": b"%PDF-1.4 fake report"}


async def test_transient_errors_are_retried():
    analyzer, model = make_analyzer([
        google_exceptions.ServiceUnavailable("overloaded"),
        google_exceptions.ResourceExhausted("quota"),
        "Looks normal",
    ])

    result = await analyzer.analyze("Checkup", PDF_B64, "checkup.pdf")

    assert result.analysis == "Looks normal"
    assert len(model.calls) == 3


async def test_permanent_errors_fail_fast():
    analyzer, model = make_analyzer([google_exceptions.InvalidArgument("bad pdf"), "unused"])

    with pytest.raises(AnalysisError, match="bad pdf"):
        await analyzer.analyze("Checkup", PDF_B64, "checkup.pdf")
    assert len(model.calls) == 1


async def test_retries_exhausted():
    analyzer, model = make_analyzer([google_exceptions.ServiceUnavailable("down")] * 4)

    with pytest.raises(AnalysisError):
        await analyzer.analyze("Checkup", PDF_B64, "checkup.pdf")
    assert len(model.calls) == 4


async def test_empty_answer():
    analyzer, _ = make_analyzer(["   "])
    result = await analyzer.analyze("Checkup", PDF_B64, "checkup.pdf")
    assert result.analysis == NO_ANALYSIS


async def test_missing_api_key():
    with pytest.raises(ConfigurationError):
        await HealthDocumentAnalyzer(api_key=None).analyze("Checkup", PDF_B64, "checkup.pdf")


async def test_input_validation():
    analyzer, model = make_analyzer(["unused"])

    with pytest.raises(ValueError):
        await analyzer.analyze("  ", PDF_B64, "checkup.pdf")
    with pytest.raises(ValueError):
        await analyzer.analyze("Checkup", "not base64!!", "checkup.pdf")
    assert model.calls == []


def test_decode_accepts_data_url():
    assert decode_base64_payload(f"data:application/pdf;base64,{PDF_B64}") == b"%PDF-1.4 fake report"


async def test_backoff_retry_only_on_listed_errors():
    attempts = []

    async def flaky():
        attempts.append(1)
        raise KeyError("not retryable")

    with pytest.raises(KeyError):
        await exponential_backoff_retry(flaky, base_delay=0, retry_on=(ConnectionError,))
    assert len(attempts) == 1
