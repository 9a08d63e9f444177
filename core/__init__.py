"""Shared building blocks: timestamped base model, document sequences and the
domain error taxonomy used by the billing, support and equipment apps."""
