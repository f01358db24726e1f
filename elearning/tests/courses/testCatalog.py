"""
E-Learning Kurskatalog Tests

Prüft die Katalog-Schnittstelle, über die der Checkout Preise und
Verfügbarkeit eines Kurses liest, sowie die öffentlichen Kurs-Endpunkte.
"""

from datetime import timedelta

from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from core.payments.exceptions import CourseNotFound
from elearning.courses import catalog
from elearning.courses.models import Course


class CatalogTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.course = Course.objects.create(title="Full Stack Bootcamp", price_minor_units=499900, currency="inr")

    def test_price_in_minor_units(self):
        self.assertEqual(catalog.price(self.course.pk), (499900, "INR"))

    def test_unknown_course(self):
        with self.assertRaises(CourseNotFound):
            catalog.get_course(424242)
        with self.assertRaises(CourseNotFound):
            catalog.price("abc")

    def test_published_course_is_purchasable(self):
        self.assertTrue(catalog.is_purchasable(self.course.pk))

    def test_unpublished_course(self):
        course = Course.objects.create(title="Entwurf", price_minor_units=100, is_published=False)
        self.assertFalse(catalog.is_purchasable(course.pk))

    def test_free_course_is_not_sold(self):
        course = Course.objects.create(title="Gratis", price_minor_units=0)
        self.assertFalse(course.is_purchasable())

    def test_sales_window(self):
        now = timezone.now()
        course = Course.objects.create(title="Sommerkurs", price_minor_units=100, purchasable_until=now)
        self.assertTrue(course.is_purchasable(now=now - timedelta(seconds=1)))
        self.assertFalse(course.is_purchasable(now=now))


class CourseViewsTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.public = Course.objects.create(title="Python Grundlagen", price_minor_units=199900)
        cls.hidden = Course.objects.create(title="Privater Kurs", price_minor_units=100, is_published=False)
        Course.objects.create(
            title="Abgelaufen",
            price_minor_units=100,
            purchasable_until=timezone.now() - timedelta(days=1),
        )

    def test_list_shows_only_sellable_courses(self):
        response = self.client.get("/api/elearning/courses/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        titles = [course["title"] for course in response.json()]
        self.assertEqual(titles, ["Python Grundlagen"])

    def test_detail(self):
        response = self.client.get(f"/api/elearning/courses/{self.public.pk}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["price_minor_units"], 199900)

    def test_hidden_course_detail_is_404(self):
        response = self.client.get(f"/api/elearning/courses/{self.hidden.pk}/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
