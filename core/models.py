from django.db import IntegrityError, models, transaction

from .exceptions import ConflictError, ValidationError


class TimeStampedModel(models.Model):
    """Abstract base model adding created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class DocumentSequence(models.Model):
    """Atomic counter backing human-readable document numbers.

    One row per scope ("service", "ticket", "receipt:2025", ...). Values are
    only ever handed out through ``core.sequences.next_value``.
    """

    scope = models.CharField(max_length=50, unique=True)
    last_value = models.BigIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Document Sequence"
        verbose_name_plural = "Document Sequences"

    def __str__(self):
        return f"{self.scope}: {self.last_value}"


class SequentiallyNumbered(models.Model):
    """Abstract model that assigns a sequence number before first save.

    Subclasses set ``number_field`` and implement ``allocate_number``. The
    number column must be unique; a collision on insert raises
    ``ConflictError``. Once stored, the number cannot be changed.
    """

    number_field = None

    class Meta:
        abstract = True

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._stored_number = dict(zip(field_names, values)).get(cls.number_field)
        return instance

    def allocate_number(self):
        raise NotImplementedError

    @property
    def document_number(self):
        return getattr(self, self.number_field)

    def save(self, *args, **kwargs):
        field = self.number_field
        stored = getattr(self, "_stored_number", None)
        if self._state.adding and not getattr(self, field):
            setattr(self, field, self.allocate_number())
        elif stored and getattr(self, field) != stored:
            raise ValidationError(f"{field} is immutable once assigned.")
        try:
            with transaction.atomic():
                result = super().save(*args, **kwargs)
        except IntegrityError as exc:
            value = getattr(self, field)
            taken = (
                type(self)
                ._default_manager.filter(**{field: value})
                .exclude(pk=self.pk)
                .exists()
            )
            if taken:
                raise ConflictError(f"{field} {value} is already taken.") from exc
            raise
        self._stored_number = getattr(self, field)
        return result
