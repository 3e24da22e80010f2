"""Tests for wiki-link and tag extraction."""

from vault_index.indexer.models import LinkRef, TagRef
from vault_index.indexer.references import (
    ReferenceParser,
    all_tags,
    extract_links,
    extract_tags,
    link_targets,
    restore_references,
)


class TestExtractLinks:
    def test_link_parts(self):
        text = "See [[Note#Head|shown]] and ![[image.png]]"
        links = extract_links(text)

        assert len(links) == 2
        first, second = links
        assert first.target == "Note"
        assert first.anchor == "Head"
        assert first.display_text == "shown"
        assert first.is_embed is False
        assert text[first.span[0] : first.span[1]] == "[[Note#Head|shown]]"
        assert second.is_embed is True
        assert second.target == "image.png"

    def test_normalizes_whitespace_and_unsafe_chars(self):
        links = extract_links("[[ What?   Now* ]]")
        assert links[0].target == "What- Now-"

    def test_keeps_characters_legal_in_note_names(self):
        links = extract_links('[[Q3: "Plans" <draft>]]')
        assert links[0].target == 'Q3: "Plans" <draft>'

    def test_keeps_generic_type_names(self):
        assert extract_links("[[Map<K,V>]]")[0].target == "Map<K,V>"

    def test_custom_unsafe_chars(self):
        parser = ReferenceParser(unsafe_chars=":")
        assert parser.extract_links("[[a:b]]")[0].target == "a-b"

    def test_link_targets_deduplicates(self):
        links = extract_links("[[A]] [[B]] [[A|again]]")
        assert link_targets(links) == ["A", "B"]


class TestExtractTags:
    def test_simple_and_nested(self):
        tags = extract_tags("#tag and #nested/deep/tag here")

        assert [t.name for t in tags] == ["tag", "nested/deep/tag"]
        nested = tags[1]
        assert nested.is_nested is True
        assert nested.parents == ("nested", "nested/deep")

    def test_skips_non_tags(self):
        text = "#123 `#code` [[#heading]] text#notatag http://x.org/#frag"
        assert extract_tags(text) == []

    def test_skips_fenced_code(self):
        tags = extract_tags("```\n#intag\n```\n#outside")
        assert [t.name for t in tags] == ["outside"]

    def test_headings_are_not_tags(self):
        assert extract_tags("# Heading\n## Sub") == []

    def test_all_tags_includes_parents_lowercased(self):
        tags = [TagRef(original="#A/B", name="A/B", is_nested=True, parents=("A",))]
        assert all_tags(tags) == ["a", "a/b"]


class TestParse:
    def test_placeholders_replace_references(self):
        text = "Link [[Target|label]] with #tag and more"
        result = ReferenceParser().parse(text)

        assert "[[" not in result.text
        assert "#tag" not in result.text
        assert len(result.links) == 1
        assert len(result.tags) == 1

    def test_restore_is_exact(self):
        text = "A [[x y]] b #c/d e ![[img.png]] #f"
        result = ReferenceParser().parse(text)
        assert restore_references(result.text, result) == text

    def test_restore_keeps_placeholder_lookalikes(self):
        text = "Glyph \ue000L7\ue001 and \ue000T0\ue001 near [[Note]] #tag \ue000"
        result = ReferenceParser().parse(text)

        assert len(result.links) == 1
        assert len(result.tags) == 1
        assert restore_references(result.text, result) == text

    def test_placeholders_contain_no_whitespace(self):
        result = ReferenceParser().parse("[[A Long Note Name With Spaces]]")
        assert len(result.text.split()) == 1

    def test_link_ref_is_hashable(self):
        link = LinkRef(original="[[a]]", target="a")
        assert {link: 1}[link] == 1
