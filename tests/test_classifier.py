"""Tests for ErrorClassifier."""

import pytest

from stackorch.classifier import DEFAULT_RETRY_PATTERNS, Classification, ErrorClassifier


STATE_LOCK_OUTPUT = """\
Initializing the backend...
╷
│ Error: Error acquiring the state lock
│
│ Error message: ConditionalCheckFailedException: The conditional request failed
│ Lock Info:
│   ID:        3f2c1e4a-9b7d-4c1e-8f2a-1b2c3d4e5f60
│   Path:      eks-terraform-state/vpc/terraform.tfstate
│   Operation: OperationTypeApply
╵
ERRO[0003] exit status 1
"""


class TestDefaults:
    def test_state_lock_is_retryable(self):
        classifier = ErrorClassifier()
        assert classifier.classify(STATE_LOCK_OUTPUT) == Classification.RETRYABLE
        assert classifier.match(STATE_LOCK_OUTPUT) == "Error acquiring the state lock"

    @pytest.mark.parametrize("output", [
        "Failed to acquire the state lock",
        "Error: creating EKS Node Group: ResourceInUseException: conflict operation in progress",
        "api error ThrottlingException: Rate exceeded",
        "read tcp 10.0.0.1:443: connection reset by peer",
    ])
    def test_known_transient_errors(self, output):
        assert ErrorClassifier().classify(output) == Classification.RETRYABLE

    def test_unmatched_is_fatal(self):
        output = 'Error: Invalid value for variable "cluster_version"'
        assert ErrorClassifier().classify(output) == Classification.FATAL

    def test_empty_output_is_fatal(self):
        classifier = ErrorClassifier()
        assert classifier.classify("") == Classification.FATAL
        assert classifier.classify(None) == Classification.FATAL


class TestMatching:
    def test_case_insensitive(self):
        classifier = ErrorClassifier(["Error acquiring the state lock"])
        assert classifier.match("ERROR ACQUIRING THE STATE LOCK") == "Error acquiring the state lock"

    def test_substring_anywhere_in_multiline_output(self):
        classifier = ErrorClassifier(["timeout while waiting"])
        output = "line one\nline two\nError: timeout while waiting for state to become 'ACTIVE'\nline four"
        assert classifier.classify(output) == Classification.RETRYABLE

    def test_first_pattern_wins(self):
        classifier = ErrorClassifier(["throttl", "rate exceeded"])
        assert classifier.match("Throttling: Rate exceeded") == "throttl"

    def test_empty_pattern_list_makes_everything_fatal(self):
        classifier = ErrorClassifier([])
        assert classifier.classify(STATE_LOCK_OUTPUT) == Classification.FATAL

    def test_empty_patterns_ignored(self):
        assert ErrorClassifier(["", "lock"]).patterns == ("lock",)


class TestExtraPatterns:
    def test_defaults_kept_and_extras_appended(self):
        classifier = ErrorClassifier.with_extra_patterns(["InvalidClientTokenId"])
        assert classifier.patterns[: len(DEFAULT_RETRY_PATTERNS)] == DEFAULT_RETRY_PATTERNS
        assert classifier.patterns[-1] == "InvalidClientTokenId"

    def test_duplicates_dropped(self):
        classifier = ErrorClassifier.with_extra_patterns(["ThrottlingException"])
        assert classifier.patterns == DEFAULT_RETRY_PATTERNS
