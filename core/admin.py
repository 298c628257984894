from django import forms
from django.contrib import admin, messages
from django.contrib.auth import get_user_model
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin
from django.utils import timezone

from .chat_llm import ChatCompletionError, llm_is_configured, request_completion
from .models import (
    ApprovedTutor,
    PhoneVerification,
    SessionOffer,
    TutoringRequest,
    TutorProfile,
    UserProfile,
)
from .offers import CANCELLABLE, REQUEST_CANCELLED
from .phone import digits_only

User = get_user_model()


class UserProfileInline(admin.StackedInline):
    model = UserProfile
    can_delete = False
    extra = 0
    max_num = 1


class AppUserAdmin(DjangoUserAdmin):
    inlines = (UserProfileInline,)
    list_display = DjangoUserAdmin.list_display + ('profile_role', 'profile_phone')

    @admin.display(description='Role')
    def profile_role(self, obj):
        return getattr(getattr(obj, 'userprofile', None), 'role', '-')

    @admin.display(description='Phone')
    def profile_phone(self, obj):
        return getattr(getattr(obj, 'userprofile', None), 'phone', None) or '-'


try:
    admin.site.unregister(User)
except admin.sites.NotRegistered:
    pass
admin.site.register(User, AppUserAdmin)


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'name', 'phone', 'role', 'phone_verified_at', 'created_at')
    list_filter = ('role',)
    search_fields = ('user__username', 'name', 'phone')
    actions = ['test_openai_connection']

    def test_openai_connection(self, request, queryset):
        if not llm_is_configured():
            self.message_user(
                request,
                "OPENAI_API_KEY is missing. Add it to .env and restart the server.",
                level=messages.ERROR,
            )
            return
        try:
            request_completion([{"role": "user", "content": "ping"}])
        except ChatCompletionError as exc:
            self.message_user(request, f"OpenAI request failed: {exc}", level=messages.ERROR)
            return
        self.message_user(request, "OpenAI OK.", level=messages.SUCCESS)

    test_openai_connection.short_description = "Test OpenAI connection"


@admin.register(TutorProfile)
class TutorProfileAdmin(admin.ModelAdmin):
    list_display = (
        'user',
        'tutor_name',
        'subjects',
        'rating',
        'completed_sessions',
        'is_active',
        'is_verified',
        'updated_at',
    )
    list_filter = ('is_active', 'is_verified')
    search_fields = ('user__username', 'user__userprofile__name', 'user__userprofile__phone')
    actions = ('activate_profiles', 'deactivate_profiles', 'mark_verified')

    @admin.display(description='Name')
    def tutor_name(self, obj):
        return getattr(getattr(obj.user, 'userprofile', None), 'name', '') or '-'

    @admin.action(description='Activate selected tutor profiles')
    def activate_profiles(self, request, queryset):
        updated = queryset.update(is_active=True, updated_at=timezone.now())
        self.message_user(request, f'{updated} profile(s) activated.', level=messages.SUCCESS)

    @admin.action(description='Deactivate selected tutor profiles')
    def deactivate_profiles(self, request, queryset):
        updated = queryset.update(is_active=False, updated_at=timezone.now())
        self.message_user(request, f'{updated} profile(s) deactivated.', level=messages.SUCCESS)

    @admin.action(description='Mark selected tutor profiles as verified')
    def mark_verified(self, request, queryset):
        updated = queryset.update(is_verified=True, updated_at=timezone.now())
        self.message_user(request, f'{updated} profile(s) verified.', level=messages.SUCCESS)


class ApprovedTutorAdminForm(forms.ModelForm):
    class Meta:
        model = ApprovedTutor
        fields = ("phone", "name", "notes", "used_at")

    def clean_phone(self):
        phone = digits_only(self.cleaned_data.get("phone"))
        if not phone:
            raise forms.ValidationError("Número de teléfono requerido")
        return phone


@admin.register(ApprovedTutor)
class ApprovedTutorAdmin(admin.ModelAdmin):
    form = ApprovedTutorAdminForm
    list_display = ('phone', 'name', 'notes', 'used_at', 'created_at')
    list_filter = ('used_at',)
    search_fields = ('phone', 'name')


@admin.register(PhoneVerification)
class PhoneVerificationAdmin(admin.ModelAdmin):
    list_display = ('phone', 'used', 'expires_at', 'created_at')
    list_filter = ('used',)
    search_fields = ('phone',)
    readonly_fields = ('code_hash',)


class SessionOfferInline(admin.TabularInline):
    model = SessionOffer
    extra = 0
    readonly_fields = ('sent_at', 'responded_at')


@admin.register(TutoringRequest)
class TutoringRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'student', 'subject', 'grade_level', 'status', 'created_at')
    list_filter = ('status', 'subject')
    search_fields = ('student__username', 'student__userprofile__name', 'topic')
    inlines = (SessionOfferInline,)
    actions = ('cancel_requests',)

    @admin.action(description='Cancel selected open requests')
    def cancel_requests(self, request, queryset):
        updated = queryset.filter(
            status__in=CANCELLABLE,
        ).update(status=REQUEST_CANCELLED, updated_at=timezone.now())
        self.message_user(request, f'{updated} request(s) cancelled.', level=messages.SUCCESS)


@admin.register(SessionOffer)
class SessionOfferAdmin(admin.ModelAdmin):
    list_display = ('id', 'request', 'tutor', 'status', 'sent_at', 'responded_at')
    list_filter = ('status',)
    search_fields = ('tutor__username', 'tutor__userprofile__name')
