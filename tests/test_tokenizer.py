"""
Unit tests for the character and byte-pair tokenizers.
"""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tiny_transformer.errors import ConfigurationError, DataError
from tiny_transformer.tokenizer import (
    BPETokenizer,
    CharTokenizer,
    UNK_ID,
    chunk_text,
    create_tokenizer,
)


class TestCharTokenizer:

    def test_vocabulary(self):
        tok = CharTokenizer.from_corpus(["ab", "ba"])
        assert tok.get_vocab_size() == 3
        assert tok.text_to_tokens("ab") == [1, 2]

    @pytest.mark.parametrize("text", ["", "hello", "olleh", "hello world", "  lo  "])
    def test_round_trip(self, text):
        tok = CharTokenizer.from_corpus(["hello world"])
        assert tok.tokens_to_text(tok.text_to_tokens(text)) == text

    def test_unknown_characters(self):
        tok = CharTokenizer.from_corpus(["ab"])
        assert tok.text_to_tokens("axb") == [1, UNK_ID, 2]
        assert tok.tokens_to_text([1, UNK_ID]) == "a<unk>"

    def test_out_of_range_ids(self):
        tok = CharTokenizer.from_corpus(["ab"])
        with pytest.raises(DataError):
            tok.tokens_to_text([3])


class TestBPETokenizer:

    def test_learns_most_frequent_pair(self):
        tok = BPETokenizer.train(["abab", "abab"], num_merges=1)
        assert tok.merges == [("a", "b")]
        assert tok.get_vocab_size() == 4
        ids = tok.text_to_tokens("abab")
        assert len(ids) == 2
        assert tok.tokens_to_text(ids) == "abab"

    def test_merges_compose(self):
        tok = BPETokenizer.train(["abcabcabc"], num_merges=5)
        assert tok.merges[0] == ("a", "b")
        assert ("ab", "c") in tok.merges
        assert tok.tokens_to_text(tok.text_to_tokens("abcab")) == "abcab"
        assert len(tok.text_to_tokens("abc")) == 1

    def test_stops_without_repeated_pairs(self):
        tok = BPETokenizer.train(["abcd"], num_merges=10)
        assert tok.merges == []
        assert tok.get_vocab_size() == 5

    def test_ties_go_to_first_pair(self):
        tok = BPETokenizer.train(["xyxyzwzw"], num_merges=1)
        assert tok.merges == [("x", "y")]

    def test_round_trip(self):
        corpus = ["the cat sat on the mat", "the hat"]
        tok = BPETokenizer.train(corpus, num_merges=20)
        for text in corpus + ["a theme", "cat hat mat"]:
            assert tok.tokens_to_text(tok.text_to_tokens(text)) == text


class TestHelpers:

    def test_factory(self):
        assert isinstance(create_tokenizer("char", ["ab"]), CharTokenizer)
        assert isinstance(create_tokenizer("bpe", ["abab"]), BPETokenizer)
        with pytest.raises(ConfigurationError):
            create_tokenizer("word", ["ab"])

    def test_chunk_text(self):
        assert chunk_text("abcdefg", 3) == ["abc", "def", "g"]
        assert chunk_text("abcdefg", 3, overlap=1) == ["abc", "cde", "efg"]
        assert chunk_text("", 3) == []

    def test_chunk_text_validation(self):
        with pytest.raises(ConfigurationError):
            chunk_text("abc", 0)
        with pytest.raises(ConfigurationError):
            chunk_text("abc", 2, overlap=2)
