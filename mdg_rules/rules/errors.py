"""Error kinds raised inside the rule engine."""


class RuleEngineError(Exception):
    """Base exception for rule engine errors"""
    pass


class RuleDefinitionError(RuleEngineError):
    """Raised when a rule's content is malformed (bad regex, unknown calculation, ...)"""

    def __init__(self, message: str, location: str | None = None):
        super().__init__(message)
        self.message = message
        self.location = location


class EvaluationFault(RuleEngineError):
    """Raised when evaluation cannot proceed, e.g. the record is not a mapping"""

    def __init__(self, message: str, rule_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.rule_id = rule_id
