# Generated for django-css-coverage

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='CSSCoverageReport',
            fields=[
                ('id', models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('url', models.CharField(help_text='Analyzed page URL', max_length=255, unique=True)),
                ('total_bytes', models.PositiveIntegerField(default=0)),
                ('used_bytes', models.PositiveIntegerField(default=0)),
                ('usage_percent', models.FloatField(default=0)),
                ('result', models.JSONField(default=dict, help_text='Full analysis result, per stylesheet')),
                ('source_last_modified', models.DateTimeField(blank=True, help_text='Last modified date from the source (e.g., sitemap)', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'CSS coverage report',
                'verbose_name_plural': 'CSS coverage reports',
            },
        ),
    ]
