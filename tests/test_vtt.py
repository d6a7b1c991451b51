import pytest

from animesub.errors import ConversionFailure
from animesub.vtt import (
    DialogueCue,
    ass_timestamp_to_ms,
    ass_to_vtt,
    detect_position,
    format_vtt_timestamp,
    merge_simultaneous,
    parse_dialogues,
    strip_ass_tags,
)


def _document(*dialogues):
    header = [
        "[Script Info]",
        "ScriptType: v4.00+",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
    ]
    return "\n".join(header + [f"Dialogue: 0,{start},{end},Default,,0,0,0,,{text}" for start, end, text in dialogues])


def _cue_starts(vtt):
    return [line.split(" --> ")[0] for line in vtt.split("\n") if " --> " in line]


def test_timestamp_conversion():
    assert ass_timestamp_to_ms("1:02:03.45") == 3723450
    assert ass_timestamp_to_ms("garbage") is None
    assert format_vtt_timestamp(3723450) == "01:02:03.450"
    assert format_vtt_timestamp(0) == "00:00:00.000"


def test_simultaneous_lines_merge_into_one_cue():
    vtt = ass_to_vtt(_document(("0:00:01.00", "0:00:02.00", "Pierwsza"), ("0:00:01.00", "0:00:02.00", "Druga")))
    assert vtt == "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\nPierwsza\nDruga\n"


def test_different_positions_are_not_merged():
    vtt = ass_to_vtt(
        _document(
            ("0:00:01.00", "0:00:02.00", "{\\an8}Napis"),
            ("0:00:01.00", "0:00:02.00", "Dialog"),
        )
    )
    assert vtt.count(" --> ") == 2
    assert "00:00:01.000 --> 00:00:02.000 line:10% position:50% align:center\nNapis" in vtt


def test_cues_sorted_by_start_then_end():
    vtt = ass_to_vtt(
        _document(
            ("0:00:05.00", "0:00:06.00", "c"),
            ("0:00:01.00", "0:00:04.00", "b"),
            ("0:00:01.00", "0:00:02.00", "a"),
        )
    )
    assert vtt.startswith("WEBVTT\n\n")
    assert _cue_starts(vtt) == ["00:00:01.000", "00:00:01.000", "00:00:05.000"]
    assert vtt.index("\na\n") < vtt.index("\nb\n") < vtt.index("\nc\n")


def test_text_keeps_commas():
    cues = parse_dialogues(_document(("0:00:01.00", "0:00:02.00", "Tak, nie, może")))
    assert cues[0].text == "Tak, nie, może"


def test_short_and_empty_dialogues_dropped():
    document = _document(("0:00:01.00", "0:00:02.00", "{\\i1}{\\i0}")) + "\nDialogue: 0,0:00:03.00,0:00:04.00,Default"
    assert parse_dialogues(document) == []
    with pytest.raises(ConversionFailure):
        ass_to_vtt(document)


@pytest.mark.parametrize(
    ("tag", "expected"),
    [
        ("{\\an1}", "line:90% position:10% align:left"),
        ("{\\an2}", "line:90% position:50% align:center"),
        ("{\\an5}", "line:50% position:50% align:center"),
        ("{\\an9}", "line:10% position:90% align:right"),
        ("{\\pos(960,108)}", "line:10% position:50% align:center"),
        ("{\\pos(96,540)}", "line:50% position:5% align:left"),
        ("{\\pos(1800,1000)}", "line:93% position:94% align:right"),
        ("{\\b1}", None),
        ("{\\pos(1.2.3,540)}", None),
        ("{\\pos(.,540)}", None),
    ],
)
def test_position_detection(tag, expected):
    assert detect_position(tag + "text") == expected


def test_alignment_wins_over_pos():
    assert detect_position("{\\pos(96,540)}{\\an8}x") == "line:10% position:50% align:center"


def test_malformed_pos_keeps_default_placement():
    vtt = ass_to_vtt(_document(("0:00:01.00", "0:00:02.00", "{\\pos(.,540)}Hej")))
    assert vtt == "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\nHej\n"


def test_strip_tags():
    assert strip_ass_tags("{\\b1}Raz{\\b0}\\Ndwa\\hi\\n\\N\\N\\Ntrzy") == "Raz\ndwa\u00a0i\n\ntrzy"


def test_merge_keeps_unique_keys():
    cues = [
        DialogueCue(0, 1000, "a"),
        DialogueCue(0, 1000, "b"),
        DialogueCue(0, 1000, "c", "line:10% position:50% align:center"),
    ]
    merged = merge_simultaneous(cues)
    assert [cue.text for cue in merged] == ["a\nb", "c"]
    assert len({cue.key for cue in merged}) == len(merged)
    assert cues[0].text == "a"
