"""Deterministic transport used for testing and offline development."""

from __future__ import annotations

import json
import random
import re
import textwrap
from typing import Iterable, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage

from ..llm.cost import CostTracker
from ..llm.providers import ProviderError
from ..llm.transport import ChatTransport

__all__ = ["MockTransport"]

_EPISODE_LINE = re.compile(r"^Episode (\d+): (.*)$", re.MULTILINE)
_WORK_LINE = re.compile(r"^Work: (.*)$", re.MULTILINE)


class MockTransport(ChatTransport):
    """Answer every stage with plausible canned output.

    ``fail_stages`` makes the named stages raise :class:`ProviderError`,
    which is how the CLI and tests rehearse capability failures offline.
    """

    def __init__(
        self,
        *,
        seed: Optional[int] = None,
        episodes: int = 10,
        model: str = "mock-model",
        fail_stages: Iterable[str] = (),
        cost_tracker: Optional[CostTracker] = None,
    ) -> None:
        super().__init__(cost_tracker=cost_tracker)
        if episodes < 1:
            raise ValueError("episodes must be at least 1")
        self._rng = random.Random(seed or 0)
        self.episodes = episodes
        self._model = model
        self.fail_stages = {stage.lower() for stage in fail_stages}
        self.calls: list[str] = []

    @property
    def model_name(self) -> str:
        return self._model

    def invoke(self, stage: str, messages: Sequence[BaseMessage]) -> AIMessage:
        stage_key = stage.lower().strip()
        self.calls.append(stage_key)
        if stage_key in self.fail_stages:
            raise ProviderError(f"Mock failure injected for stage '{stage}'")

        prompt = "\n".join(str(message.content) for message in messages)
        if stage_key == "analysis":
            content = self._build_analysis(prompt)
        elif stage_key == "planning":
            content = self._build_plan(prompt)
        elif stage_key == "script":
            content = self._build_script(prompt)
        else:
            raise ProviderError(f"Unsupported stage '{stage}'")

        self._record_usage(
            stage=stage_key,
            model=self._model,
            prompt_tokens=self._estimate_tokens(prompt),
            completion_tokens=self._estimate_tokens(content),
            cost=0.0,
        )
        return AIMessage(content=content, response_metadata={"model_name": self._model, "provider": "mock"})

    def _build_analysis(self, prompt: str) -> str:
        genre = self._select_phrase(["玄幻", "都市", "悬疑", "重生"])
        payload = {
            "genre": genre,
            "title": "青云逆途",
            "logline": "被逐出宗门的少年在废墟中得到残破古卷，一步步揭开师门覆灭的真相。",
            "themes": ["逆袭", "成长", self._select_phrase(["复仇", "守护", "宿命"])],
            "pacing": "快节奏，每章都有爽点",
            "targetAudience": "18-30岁男性读者",
            "characters": [
                {
                    "name": "林青",
                    "role": "主角",
                    "description": "外门弟子，隐忍而倔强。",
                    "traits": ["坚韧", "机敏"],
                },
                {
                    "name": "苏婉",
                    "role": "女主",
                    "description": "药谷传人，外冷内热。",
                    "traits": ["聪慧", "果断"],
                },
                {
                    "name": "赵烈",
                    "role": "反派",
                    "description": "宗门长老之子，处处打压林青。",
                    "traits": ["傲慢"],
                },
            ],
        }
        return json.dumps(payload, ensure_ascii=False)

    def _build_plan(self, prompt: str) -> str:
        hooks = ["危机降临", "暗流涌动", "绝境反击", "真相浮现", "强敌来袭", "意外相逢"]
        plan = []
        for number in range(1, self.episodes + 1):
            hook = self._select_phrase(hooks)
            plan.append(
                {
                    "episodeNumber": number,
                    "title": f"{hook}（{number}）",
                    "synopsis": f"林青在第{number}集中遭遇{hook}，被迫做出选择。",
                    "keyEvents": [f"{hook}的开端", "林青出手", "悬念收尾"],
                    "charactersInvolved": ["林青", self._select_phrase(["苏婉", "赵烈"])],
                }
            )
        return json.dumps(plan, ensure_ascii=False)

    def _build_script(self, prompt: str) -> str:
        match = _EPISODE_LINE.search(prompt)
        number, title = (match.group(1), match.group(2).strip()) if match else ("1", "未命名")
        work_match = _WORK_LINE.search(prompt)
        work = work_match.group(1).strip() if work_match else "未命名作品"
        mood = self._select_phrase(["冷雨夜", "残阳如血", "晨雾弥漫"])
        return textwrap.dedent(
            f"""
            《{work}》第 {number} 集 · {title}

            [SCENE] 青云宗外门，{mood}。
            [VISUAL] 远景：破旧的石阶延伸入云，林青独自拾级而上。
            [SFX] 风声呼啸。
            林青: 今日之辱，他日必百倍奉还。
            [VISUAL] 特写：林青握紧的拳头，指节发白。
            赵烈: 废物也配踏上主峰？
            [SFX] 衣袂破空声。
            """
        ).strip()

    def _select_phrase(self, options: list[str]) -> str:
        return options[self._rng.randrange(len(options))]

    def _estimate_tokens(self, text: str) -> int:
        return max(1, len(text) // 4)
