"""文章摘要生成."""

import json
import logging

from pydantic import BaseModel, Field

from neureed.llm.base import LLMProvider, Message

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """你是一个文章摘要助手。

## 任务
阅读用户提供的文章，生成摘要、关键要点和主题关键词。

## 输出格式（严格 JSON）
{
  "summary": "2-3 句话的摘要，使用文章原语言",
  "key_points": ["要点1", "要点2", "要点3"],
  "topics": ["主题1", "主题2"]
}

## 注意事项
- 关键要点 3-5 个，保持简洁
- 主题 3-6 个，使用小写的单个词或短语，便于作为关键词匹配
- 只返回 JSON，不要其他内容"""

USER_PROMPT_TEMPLATE = """**标题**：{title}

**正文**：
{content}"""

MAX_CONTENT_LENGTH = 8000


class SummaryResult(BaseModel):
    """摘要结果."""

    summary: str
    key_points: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    total_tokens: int = 0


class SummaryParseError(ValueError):
    """LLM 返回内容无法解析为摘要."""


class ArticleSummarizer:
    """调用 LLM 生成文章摘要."""

    def __init__(self, provider: LLMProvider) -> None:
        self.provider = provider

    async def summarize(self, title: str, content: str) -> SummaryResult:
        """生成摘要，返回结构化结果."""
        response = await self.provider.chat(self._build_messages(title, content), json_mode=True)
        result = self._parse_response(response.content)
        result.total_tokens = response.total_tokens
        return result

    def _build_messages(self, title: str, content: str) -> list[Message]:
        if len(content) > MAX_CONTENT_LENGTH:
            content = content[:MAX_CONTENT_LENGTH] + "\n\n[内容已截断...]"
        return [
            Message(role="system", content=SYSTEM_PROMPT),
            Message(
                role="user",
                content=USER_PROMPT_TEMPLATE.format(title=title, content=content),
            ),
        ]

    def _parse_response(self, response: str) -> SummaryResult:
        """解析 LLM 响应，去掉可能的 markdown 代码块."""
        text = response.strip()
        if text.startswith("```json"):
            text = text[7:]
        elif text.startswith("```"):
            text = text[3:]
        if text.endswith("```"):
            text = text[:-3]

        try:
            data = json.loads(text.strip())
        except json.JSONDecodeError as e:
            msg = f"摘要结果不是合法 JSON: {e}"
            raise SummaryParseError(msg) from e

        if not isinstance(data, dict) or not data.get("summary"):
            msg = "摘要结果缺少 summary 字段"
            raise SummaryParseError(msg)

        return SummaryResult(
            summary=str(data["summary"]).strip(),
            key_points=[str(p).strip() for p in data.get("key_points") or [] if str(p).strip()],
            topics=[str(t).strip().lower() for t in data.get("topics") or [] if str(t).strip()],
        )
