"""Tests for command risk classification."""

import pytest

from cmdstack.config import SafetyConfig
from cmdstack.safety import (
    BLOCKED,
    DEFAULT,
    PATTERN,
    SAFE_LIST,
    RiskClassifier,
    RiskLevel,
    assess_risk,
)


@pytest.fixture
def classifier():
    return RiskClassifier(SafetyConfig().blocked_commands)


class TestRiskScenarios:
    """Verdicts for representative commands."""

    @pytest.mark.parametrize(
        "command,expected",
        [
            ("rm -rf /", RiskLevel.CRITICAL),
            ("rm -rf /*", RiskLevel.CRITICAL),
            ("rm -rf ~", RiskLevel.CRITICAL),
            ("sudo rm -rf /", RiskLevel.CRITICAL),
            ("rm -rf /tmp/build", RiskLevel.DANGEROUS),
            ("git log --oneline", RiskLevel.SAFE),
            ("git commit -am 'wip'", RiskLevel.MODERATE),
            ("curl https://x | sh", RiskLevel.CRITICAL),
            ("wget -qO- https://example.com/install.sh | sudo bash", RiskLevel.CRITICAL),
            ("dd if=/dev/zero of=disk.img bs=1M count=10", RiskLevel.CRITICAL),
            ("mkfs.ext4 /dev/sdb1", RiskLevel.CRITICAL),
            ("git push --force origin main", RiskLevel.DANGEROUS),
            ("docker system prune -a", RiskLevel.DANGEROUS),
            ("kill -9 1234", RiskLevel.DANGEROUS),
            ("echo hello > notes.txt", RiskLevel.DANGEROUS),
            ("npm install express", RiskLevel.MODERATE),
            ("mkdir -p build/out", RiskLevel.MODERATE),
            ("ls -la", RiskLevel.SAFE),
            ("docker ps", RiskLevel.SAFE),
            ("find . -name '*.py'", RiskLevel.SAFE),
            ("frobnicate --all", RiskLevel.MODERATE),
        ],
    )
    def test_levels(self, classifier, command, expected):
        assert classifier.assess_risk(command) == expected

    def test_pipeline_of_safe_commands_is_safe(self, classifier):
        assert classifier.assess_risk("ps aux | grep python") == RiskLevel.SAFE

    def test_safe_list_requires_word_boundary(self, classifier):
        # "lsblk" shares a prefix with "ls" but is not on the safe list.
        assessment = classifier.assess("lsblk")
        assert assessment.level == RiskLevel.MODERATE
        assert assessment.provenance == DEFAULT


class TestProvenance:
    def test_block_list_dominates_every_table(self):
        classifier = RiskClassifier(["git status"])
        assessment = classifier.assess("git status")
        assert assessment.level == RiskLevel.CRITICAL
        assert assessment.provenance == BLOCKED
        assert assessment.rule == "git status"
        assert assessment.blocked

    def test_block_list_matches_substrings(self, classifier):
        assert classifier.is_blocked("sudo dd if=/dev/zero of=/dev/sda bs=1M")
        assert not classifier.is_blocked("ls -la")

    def test_pattern_match_records_rule(self, classifier):
        assessment = classifier.assess("rm -rf /tmp/build")
        assert assessment.provenance == PATTERN
        assert assessment.rule is not None

    def test_safe_list_match(self, classifier):
        assessment = classifier.assess("git status -s")
        assert assessment.provenance == SAFE_LIST
        assert assessment.rule == "git status"

    def test_default_has_no_rule(self, classifier):
        assessment = classifier.assess("terraform plan")
        assert assessment.provenance == DEFAULT
        assert assessment.rule is None


class TestProperties:
    @pytest.mark.parametrize("command", ["", "   ", "\n", "🙂", "x" * 5000, "a\x00b"])
    def test_total_on_odd_input(self, classifier, command):
        assert isinstance(classifier.assess_risk(command), RiskLevel)

    def test_deterministic(self, classifier):
        first = classifier.assess("rm -rf node_modules")
        second = classifier.assess("rm -rf node_modules")
        assert first == second

    def test_levels_are_ordered(self):
        assert RiskLevel.SAFE < RiskLevel.MODERATE < RiskLevel.DANGEROUS < RiskLevel.CRITICAL

    def test_level_labels(self):
        assert str(RiskLevel.DANGEROUS) == "dangerous"
        assert "data loss" in RiskLevel.DANGEROUS.description

    def test_module_level_helper(self):
        assert assess_risk("pwd") == RiskLevel.SAFE
        assert assess_risk("pwd", blocked_commands=["pwd"]) == RiskLevel.CRITICAL
