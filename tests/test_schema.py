from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from manju.pipeline.schema import AnalysisResult, EpisodePlanEntry, Genre, plan_to_markdown


def test_genre_parse_accepts_values_and_member_names() -> None:
    assert Genre.parse("玄幻") is Genre.XUANHUAN
    assert Genre.parse(" 悬疑 ") is Genre.SUSPENSE
    assert Genre.parse("sci_fi") is Genre.SCI_FI
    assert Genre.parse(Genre.OTHER) is Genre.OTHER

    with pytest.raises(ValueError):
        Genre.parse("赛博朋克")


def test_analysis_result_accepts_camel_case_and_normalises_lists() -> None:
    result = AnalysisResult.model_validate(
        {
            "genre": "都市",
            "title": "都市之巅",
            "themes": ["逆袭", " 逆袭 ", "", "爱情"],
            "targetAudience": "年轻读者",
            "characters": [{"name": "陈凡", "traits": None}],
            "unexpected": "ignored",
        }
    )

    assert result.genre is Genre.URBAN
    assert result.themes == ["逆袭", "爱情"]
    assert result.target_audience == "年轻读者"
    assert result.characters[0].traits == []


def test_analysis_result_drops_malformed_list_entries(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="manju.pipeline.schema"):
        result = AnalysisResult.model_validate(
            {
                "genre": "末世",
                "title": "废土",
                "logline": None,
                "themes": ["求生", None, 42, ""],
                "characters": [
                    {"name": "林野", "role": None, "traits": ["冷静", None]},
                    {"name": "   "},
                    {"role": "路人"},
                    None,
                ],
            }
        )

    assert result.logline == ""
    assert result.themes == ["求生"]
    assert [character.name for character in result.characters] == ["林野"]
    assert result.characters[0].role == ""
    assert result.characters[0].traits == ["冷静"]
    assert "Dropping character without a usable name" in caplog.text
    assert "Dropping malformed themes entry: 42" in caplog.text


@pytest.mark.parametrize(
    "payload",
    [
        {"genre": "玄幻", "title": "X", "themes": "逆袭"},
        {"genre": "玄幻", "title": "X", "characters": {"name": "叶尘"}},
        {"genre": "玄幻"},
    ],
)
def test_analysis_result_still_rejects_top_level_shape_errors(payload) -> None:
    with pytest.raises(PydanticValidationError):
        AnalysisResult.model_validate(payload)


def test_analysis_result_rejects_unknown_genre() -> None:
    with pytest.raises(PydanticValidationError):
        AnalysisResult.model_validate({"genre": "cyberpunk", "title": "X"})


def test_analysis_result_is_frozen() -> None:
    result = AnalysisResult(genre=Genre.WUXIA, title="侠客行")
    with pytest.raises(PydanticValidationError):
        result.title = "改名"  # type: ignore[misc]


def test_analysis_markdown_lists_characters() -> None:
    result = AnalysisResult.model_validate(
        {
            "genre": "玄幻",
            "title": "逆天剑帝",
            "logline": "废柴逆袭。",
            "themes": ["逆袭"],
            "characters": [{"name": "叶尘", "role": "主角", "description": "少年", "traits": ["坚韧", "机敏"]}],
        }
    )

    markdown = result.to_markdown()

    assert markdown.startswith("# 逆天剑帝")
    assert "- 题材: 玄幻" in markdown
    assert "> 废柴逆袭。" in markdown
    assert "### 叶尘（主角）" in markdown
    assert "- 特质: 坚韧、机敏" in markdown


def test_episode_plan_entry_requires_positive_number() -> None:
    with pytest.raises(PydanticValidationError):
        EpisodePlanEntry(episode_number=0, title="序章")

    entry = EpisodePlanEntry.model_validate({"episodeNumber": 3, "title": "决战", "keyEvents": None})
    assert entry.episode_number == 3
    assert entry.key_events == []
    assert entry.model_dump(by_alias=True)["episodeNumber"] == 3


def test_plan_to_markdown_uses_zero_padded_headings() -> None:
    plan = [
        EpisodePlanEntry(episode_number=1, title="觉醒", synopsis="少年觉醒剑骨。", key_events=["测灵"]),
        EpisodePlanEntry(episode_number=2, title="入宗", characters_involved=["叶尘", "林雪"]),
    ]

    markdown = plan_to_markdown(plan)

    assert markdown.startswith("# 分集大纲")
    assert "## 第 01 集 · 觉醒" in markdown
    assert "- 测灵" in markdown
    assert "- 出场人物: 叶尘、林雪" in markdown
