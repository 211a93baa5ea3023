from django.contrib import admin

from .models import Interest, Investment, Milestone, Notification, Project, Transaction


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("chain_project_id", "name", "category", "status", "funding_goal", "funds_raised", "investor_count")
    list_filter = ("status", "category")
    search_fields = ("name", "location")
    readonly_fields = ("funds_raised", "funds_released", "investor_count")


@admin.register(Investment)
class InvestmentAdmin(admin.ModelAdmin):
    list_display = ("tx_hash", "investor", "project", "amount", "status", "confirmed_at")
    list_filter = ("status",)
    search_fields = ("tx_hash",)
    readonly_fields = ("status", "confirmed_at", "block_number", "gas_used")


@admin.register(Milestone)
class MilestoneAdmin(admin.ModelAdmin):
    list_display = ("project", "milestone_index", "name", "status", "funds_to_release")
    list_filter = ("status",)
    # completion goes through Reconciler.update_milestone
    readonly_fields = ("status", "completed_date", "evidence_hash", "verified_by", "tx_hash")


@admin.register(Interest)
class InterestAdmin(admin.ModelAdmin):
    list_display = ("investor", "project", "accrued_amount", "claimed_amount", "pending_amount", "overclaim_flagged")
    list_filter = ("overclaim_flagged",)
    readonly_fields = (
        "accrued_amount", "claimed_amount", "pending_amount", "last_accrual_date", "last_claim_date", "claim_count",
    )


admin.site.register(Transaction)
admin.site.register(Notification)
