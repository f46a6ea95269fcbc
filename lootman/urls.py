from django.urls import path

from .views import ChoiceClaimView, ChoiceDetailView, ChoiceListView, TriggerView

app_name = "lootman"

urlpatterns = [
    path("choices/", ChoiceListView.as_view(), name="choice-list"),
    path("choices/<uuid:choice_id>/", ChoiceDetailView.as_view(), name="choice-detail"),
    path("choices/<uuid:choice_id>/claim/", ChoiceClaimView.as_view(), name="choice-claim"),
    path("triggers/", TriggerView.as_view(), name="trigger"),
]
