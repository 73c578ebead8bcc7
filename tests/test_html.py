from __future__ import annotations

from mail_push_forwarder.message import cleanup_html


def test_script_is_dropped_and_tags_removed() -> None:
    assert cleanup_html("<p>Hi <b>there</b></p><script>x</script>") == "Hi there"


def test_style_and_comments_are_dropped() -> None:
    html = "<html><head><style>p { color: red; }</style></head><body><!-- hidden --><div>Visible</div></body></html>"

    assert cleanup_html(html) == "Visible"


def test_entities_are_decoded() -> None:
    assert cleanup_html("<p>Fish &amp; Chips&nbsp;&lt;3</p>") == "Fish & Chips <3"


def test_line_breaks_and_block_elements_end_lines() -> None:
    html = "<div>First line<br>Second line</div><p>Paragraph</p><ul><li>one</li><li>two</li></ul>"

    assert cleanup_html(html) == "First line\nSecond line\nParagraph\none\ntwo"


def test_blank_lines_and_spaces_are_squeezed() -> None:
    html = "<p>  lots    of\t\tspace  </p>\n\n\n<p></p><p>end</p>"

    assert cleanup_html(html) == "lots of space\nend"


def test_empty_input() -> None:
    assert cleanup_html("") == ""
