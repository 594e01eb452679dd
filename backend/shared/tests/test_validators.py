import pytest

from game.server.settings import GameServerSettings
from shared.validators import parse_origin_list


class TestParseOriginList:
    def test_json_array_string(self):
        result = parse_origin_list('["http://a.com","http://b.com"]')
        assert result == ["http://a.com", "http://b.com"]

    def test_comma_separated_string(self):
        result = parse_origin_list("http://a.com,http://b.com")
        assert result == ["http://a.com", "http://b.com"]

    def test_comma_separated_with_whitespace(self):
        result = parse_origin_list("http://a.com , http://b.com")
        assert result == ["http://a.com", "http://b.com"]

    def test_passthrough_list(self):
        origins = ["http://a.com", "http://b.com"]
        assert parse_origin_list(origins) == origins

    def test_empty_string_means_no_origins(self):
        assert parse_origin_list("") == []

    def test_comma_separated_skips_empty_segments(self):
        result = parse_origin_list("http://a.com,,http://b.com,")
        assert result == ["http://a.com", "http://b.com"]

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError, match="Invalid JSON array"):
            parse_origin_list("[not valid json")

    def test_json_mixed_types_array_raises(self):
        with pytest.raises(ValueError, match="must be an array of strings"):
            parse_origin_list('["http://a.com", 123]')


class TestSettingsFromEnv:
    def test_comma_separated_cors_origins(self, monkeypatch):
        monkeypatch.setenv("GAME_CORS_ORIGINS", "http://a.com,http://b.com")
        assert GameServerSettings().cors_origins == ["http://a.com", "http://b.com"]

    def test_json_cors_origins(self, monkeypatch):
        monkeypatch.setenv("GAME_CORS_ORIGINS", '["http://c.com"]')
        assert GameServerSettings().cors_origins == ["http://c.com"]
