from django.contrib import admin

from .models import Profile


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "wallet_address", "role", "kyc_status", "total_invested")
    list_filter = ("role", "kyc_status")
    search_fields = ("wallet_address", "name", "user__email")
