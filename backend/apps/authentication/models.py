"""
Authentication models.

Tables: users
"""

import uuid
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class User(models.Model):
    """
    User model

    The college a user belongs to is the domain part of their email address;
    chat is only allowed between users of the same college.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, max_length=255)
    name = models.CharField(max_length=50)
    password_hash = models.CharField(max_length=255)
    avatar_url = models.CharField(max_length=1000, null=True, blank=True)
    year = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    branch = models.CharField(max_length=100, blank=True, default='')
    college_domain = models.CharField(max_length=255, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return self.email

    @property
    def is_authenticated(self):
        return True

    @staticmethod
    def domain_of(email: str) -> str:
        """Return the college domain for an email address"""
        return email.rsplit('@', 1)[-1].lower()

    def set_password(self, raw_password):
        """Hash and set password using bcrypt"""
        import bcrypt
        self.password_hash = bcrypt.hashpw(
            raw_password.encode('utf-8'),
            bcrypt.gensalt()
        ).decode('utf-8')

    def check_password(self, raw_password):
        """Verify password using bcrypt"""
        import bcrypt
        return bcrypt.checkpw(
            raw_password.encode('utf-8'),
            self.password_hash.encode('utf-8')
        )
