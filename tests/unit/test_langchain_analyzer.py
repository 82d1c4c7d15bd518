import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage

from oversized_json.analysis.analyzer import ChunkRequest, LangChainChunkAnalyzer
from oversized_json.analysis.prompts import SYSTEM_PROMPT
from oversized_json.errors import ChunkProcessingError, MalformedResponseError
from oversized_json.types import Chunk

_VALID_RESPONSE = {
    "chunk_index": 0,
    "total_chunks": 1,
    "records_analyzed": 1,
    "high_priority_issues": [
        {
            "record_id": "REC-1",
            "issue_type": "compliance",
            "severity": "HIGH",
            "description": "Overdue action",
            "required_action": "Resolve",
            "priority_days": 7,
        }
    ],
    "medium_priority_issues": [],
    "recommendations": ["Review overdue actions weekly."],
    "summary": "One overdue record.",
}


class _CapturingLLM:
    def __init__(self, content) -> None:
        self.content = content
        self.bound: dict = {}
        self.messages = None

    def bind(self, **kwargs):
        self.bound = kwargs
        return self

    def invoke(self, messages):
        self.messages = messages
        return AIMessage(content=self.content)


class _FailingLLM:
    def bind(self, **kwargs):
        return self

    def invoke(self, messages):
        raise ConnectionError("network down")


def _request(index: int = 0) -> ChunkRequest:
    chunk = Chunk(index=index, total_chunks=3, records=({"record_id": "REC-1"},), estimated_tokens=6)
    return ChunkRequest(
        chunk=chunk,
        system_prompt=SYSTEM_PROMPT,
        user_message='Analyze the following 1 records (chunk 1 of 3):\n\n[{"record_id": "REC-1"}]',
        max_output_tokens=4000,
    )


def test_parses_structured_response_from_fake_chat_model() -> None:
    llm = FakeListChatModel(responses=[json.dumps(_VALID_RESPONSE)])

    result = LangChainChunkAnalyzer(llm).analyze(_request())

    assert result.high_priority_issues[0].record_id == "REC-1"
    assert result.recommendations == ["Review overdue actions weekly."]


def test_sends_system_and_user_messages_with_schema_binding() -> None:
    llm = _CapturingLLM(json.dumps(_VALID_RESPONSE))

    LangChainChunkAnalyzer(llm).analyze(_request())

    messages = llm.messages.to_messages()
    assert messages[0].type == "system"
    assert messages[0].content == SYSTEM_PROMPT
    assert messages[1].type == "human"
    assert '"record_id": "REC-1"' in messages[1].content
    assert llm.bound["temperature"] == 0.0
    assert llm.bound["max_tokens"] == 4000
    assert llm.bound["response_format"]["json_schema"]["name"] == "analysis_result"


def test_list_content_blocks_are_joined() -> None:
    text = json.dumps(_VALID_RESPONSE)
    llm = _CapturingLLM([{"type": "text", "text": text[:20]}, {"type": "text", "text": text[20:]}])

    result = LangChainChunkAnalyzer(llm).analyze(_request())

    assert result.summary == "One overdue record."


@pytest.mark.parametrize(
    "content",
    [
        "not json at all",
        "",
        json.dumps({**_VALID_RESPONSE, "unexpected": True}),
        json.dumps({key: value for key, value in _VALID_RESPONSE.items() if key != "summary"}),
    ],
)
def test_malformed_responses_raise(content) -> None:
    with pytest.raises(MalformedResponseError) as exc_info:
        LangChainChunkAnalyzer(_CapturingLLM(content)).analyze(_request(index=2))

    assert exc_info.value.chunk_index == 2


def test_model_call_failure_is_wrapped() -> None:
    with pytest.raises(ChunkProcessingError) as exc_info:
        LangChainChunkAnalyzer(_FailingLLM()).analyze(_request(index=1))

    assert not isinstance(exc_info.value, MalformedResponseError)
    assert exc_info.value.chunk_index == 1
    assert isinstance(exc_info.value.__cause__, ConnectionError)
