"""Admission webhook plumbing.

- `handlers`: validator/mutator protocols implemented by resource packages
- `adapter`: AdmissionReview decoding, handler chain driving, response encoding
"""
