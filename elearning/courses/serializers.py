from rest_framework import serializers

from .models import Course


class CourseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Course
        fields = ["id", "title", "description", "price_minor_units", "currency", "purchasable_until"]
        read_only_fields = fields
