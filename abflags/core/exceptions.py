class AssignmentConflictError(Exception):
    """Another writer already stored an assignment for this user and flag."""

    def __init__(self, user_id: str, flag_id: str | None = None) -> None:
        self.user_id = user_id
        self.flag_id = flag_id
        if flag_id is None:
            message = f"assignment conflict for user {user_id}"
        else:
            message = f"assignment conflict for user {user_id} on flag {flag_id}"
        super().__init__(message)
