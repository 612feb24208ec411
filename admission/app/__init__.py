"""Validators and mutators for App CRs."""
