"""App admission controller: validating and mutating webhooks for App CRs."""
