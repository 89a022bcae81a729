from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import Branch

User = get_user_model()


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Accepts either a username or an e-mail address in the ``username`` field."""

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = getattr(user, "role", None)
        token["branch_id"] = str(user.branch_id) if getattr(user, "branch_id", None) else None
        token["display_name"] = user.display_name
        return token

    def validate(self, attrs):
        login = (attrs.get("username") or "").strip()
        if "@" in login:
            match = User.objects.filter(email__iexact=login).only("username").first()
            if match is not None:
                attrs["username"] = match.get_username()
        return super().validate(attrs)


class BranchSerializer(serializers.ModelSerializer):
    class Meta:
        model = Branch
        fields = ["id", "code", "name", "timezone", "is_active"]
        read_only_fields = fields
