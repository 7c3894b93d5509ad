from __future__ import annotations

import pytest

from tennis_watch.config import detail_target, facility_type_target, tennis_target
from tennis_watch.navigation import (
    INTERACTIVE_SELECTOR,
    NavigationTarget,
    TagKind,
    click_candidate,
    find_best_candidate,
    rank_candidates,
)

BASE = "https://resv.example.jp/Web/Yoyaku/WgR_ShisetsuShubetsu"
CALENDAR_URL = "https://resv.example.jp/Web/Yoyaku/WgR_ShisetsubetsuAkiJoukyou"

MODE_PAGE = """
<html><body>
  <h2>施設の種類を選択してください</h2>
  <button type="button">戻る</button>
  <a href="javascript:void(0)">テニス教室のキャンセル</a>
  <a href="javascript:void(0)">テニス大会のお知らせ</a>
  <a href="javascript:void(0)">プール</a>
  <a href="javascript:void(0)" onclick="doPost('Tennis')">庭球場</a>
  <input type="submit" value="検索">
</body></html>
"""


def test_text_hint_beats_decoys() -> None:
    best = find_best_candidate(MODE_PAGE, BASE, tennis_target())

    assert best is not None
    assert best.text == "庭球場"
    assert best.tag_kind is TagKind.LINK
    assert best.score == 40


def test_must_not_match_excludes_decoy() -> None:
    texts = [candidate.text for candidate in rank_candidates(MODE_PAGE, BASE, tennis_target())]
    assert "テニス教室のキャンセル" not in texts
    assert texts == ["庭球場", "テニス大会のお知らせ"]


def test_href_match_outranks_text() -> None:
    html = """
    <a href="/Web/Yoyaku/Other">庭球場のご案内</a>
    <a href="/Web/Yoyaku/WgR_ShisetsubetsuAkiJoukyou?mode=1#top">空き状況</a>
    """
    best = find_best_candidate(html, BASE, tennis_target(CALENDAR_URL))
    assert best is not None
    assert best.href == "/Web/Yoyaku/WgR_ShisetsubetsuAkiJoukyou?mode=1#top"
    assert best.score == 110


def test_handler_hint_scores_inputs() -> None:
    target = NavigationTarget(label="detail", handler_hints=("Jikantaibetsu",), threshold=50)
    html = """
    <input type="button" value="表示" onclick="submitTo('WgR_JikantaibetsuAkiJoukyou')">
    <input type="button" value="閉じる">
    """
    best = find_best_candidate(html, BASE, target)
    assert best is not None
    assert best.tag_kind is TagKind.INPUT
    assert best.index == 0
    assert best.score == 50


def test_ties_go_to_document_order() -> None:
    html = '<a href="#">庭球場</a><a href="#">庭球場</a>'
    best = find_best_candidate(html, BASE, tennis_target())
    assert best is not None
    assert best.index == 0


def test_nothing_above_threshold() -> None:
    html = '<a href="/help">ヘルプ</a><button>戻る</button>'
    assert find_best_candidate(html, BASE, tennis_target()) is None


def test_image_alt_counts_as_text() -> None:
    html = '<a href="#"><img src="tennis.png" alt="庭球場"></a>'
    best = find_best_candidate(html, BASE, tennis_target())
    assert best is not None
    assert best.text == "庭球場"


class RecordingClicker:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    async def click_nth(self, selector: str, index: int) -> None:
        self.calls.append((selector, index))


@pytest.mark.asyncio
async def test_click_candidate_addresses_element_by_index() -> None:
    best = find_best_candidate(MODE_PAGE, BASE, tennis_target())
    clicker = RecordingClicker()

    await click_candidate(clicker, best)

    assert clicker.calls == [(INTERACTIVE_SELECTOR, best.index)]
    assert best.index == 4


def test_facility_type_link_to_calendar_gets_url_bonus() -> None:
    html = """
    <a href="/Web/Home/Purpose">利用目的から探す</a>
    <a href="/Web/Yoyaku/WgR_ShisetsubetsuAkiJoukyou?mode=1">施設の種類から探す</a>
    """
    best = find_best_candidate(html, BASE, facility_type_target(CALENDAR_URL))

    assert best is not None
    assert best.index == 1
    assert best.score == 100 + 30 + 20 + 10


def test_time_slot_view_link_needs_more_than_generic_words() -> None:
    detail_url = "https://resv.example.jp/Web/Yoyaku/WgR_JikantaibetsuAkiJoukyou"
    html = """
    <a href="javascript:void(0)">施設別空き状況</a>
    <a href="javascript:void(0)" onclick="__doPostBack('Jikantaibetsu','')">表示</a>
    """
    best = find_best_candidate(html, BASE, detail_target(detail_url))

    assert best is not None
    assert best.text == "表示"
    assert best.score == 50 + 10
