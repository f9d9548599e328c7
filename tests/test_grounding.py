"""Tests for command grounding validation."""

from netdoc_rag.grounding import extract_commands, validate


PFC_REFERENCE = """PFC配置：
nv set qos pfc on
nv set qos pfc priority <0-7>
验证：nv show qos pfc"""


class TestExtractCommands:
    def test_stops_at_chinese_text_and_comments(self) -> None:
        text = "执行命令：nv commit  # 这个命令不存在\n然后运行 nv show qos pfc 查看结果"
        assert extract_commands(text) == ["nv commit", "nv show qos pfc"]

    def test_known_prefixes(self) -> None:
        text = "sudo cl-support\nnetq check bgp\nvtysh -c 'show ip route'\nnet add bgp autonomous-system 65001"
        cmds = extract_commands(text)
        assert cmds[0] == "sudo cl-support"
        assert cmds[1] == "netq check bgp"
        assert cmds[2].startswith("vtysh -c")
        assert cmds[3] == "net add bgp autonomous-system 65001"

    def test_words_containing_prefixes_are_not_commands(self) -> None:
        assert extract_commands("nvidia cumulus network internet") == []

    def test_stops_at_end_of_sentence(self) -> None:
        text = "First run nv show qos pfc. Then check the counters."
        assert extract_commands(text) == ["nv show qos pfc"]


class TestValidate:
    def test_ungrounded_command_scenario(self) -> None:
        result = validate("执行命令：nv commit", ["nv set qos pfc on\nnv config apply"])
        assert result.suspicious_commands == ["nv commit"]
        assert result.is_valid is False

    def test_verbatim_command_is_grounded(self) -> None:
        result = validate("运行 nv   show qos pfc 查看", [PFC_REFERENCE])
        assert result.is_valid is True
        assert result.suspicious_commands == []

    def test_absent_command_always_suspicious(self) -> None:
        result = validate("nv set qos ecn on", [PFC_REFERENCE])
        assert result.suspicious_commands == ["nv set qos ecn on"]

    def test_command_must_match_on_token_boundaries(self) -> None:
        result = validate("nv show qos", ["nv show qosx"])
        assert result.suspicious_commands == ["nv show qos"]

    def test_placeholder_fill_is_a_warning(self) -> None:
        result = validate("1. 执行命令：nv set qos pfc priority 3", [PFC_REFERENCE])
        assert result.is_valid is True
        assert any("placeholders" in w for w in result.warnings)
        assert any("parameter '3'" in w for w in result.warnings)

    def test_unknown_address_in_prose_warns(self) -> None:
        result = validate("将地址设置为 10.1.1.1 即可", ["BGP配置指南"])
        assert result.is_valid is True
        assert result.warnings == ["address '10.1.1.1' does not appear in any reference"]

    def test_answer_without_commands(self) -> None:
        result = validate("根据参考文档，未找到关于VXLAN配置的相关信息。", ["nv set router bgp asn <asn>"])
        assert result.is_valid is True
        assert result.suspicious_commands == []
        assert result.warnings == []

    def test_command_followed_by_english_prose(self) -> None:
        result = validate("Run nv config apply to save the changes.", ["nv set qos pfc on\nnv config apply"])
        assert result.suspicious_commands == []
        assert result.is_valid is True

    def test_invented_argument_before_prose_stays_suspicious(self) -> None:
        result = validate("Run nv set qos pfc on swp99 to enable it.", [PFC_REFERENCE])
        assert result.suspicious_commands == ["nv set qos pfc on swp99 to enable it"]

    def test_single_trailing_word_is_not_dropped(self) -> None:
        result = validate("nv config apply now", ["nv config apply"])
        assert result.suspicious_commands == ["nv config apply now"]
