import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('catalog', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='AIInsight',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('entity_type', models.CharField(choices=[('PRODUCT', 'Product'), ('CATEGORY', 'Category'), ('VENDOR', 'Vendor'), ('SYSTEM', 'System')], max_length=20)),
                ('entity_id', models.CharField(max_length=100)),
                ('insight_type', models.CharField(choices=[('RECOMMENDATION', 'Recommendation'), ('TREND', 'Trend'), ('ALERT', 'Alert'), ('FORECAST', 'Forecast')], max_length=20)),
                ('content', models.TextField()),
                ('confidence', models.FloatField(default=0.85)),
                ('applied', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='ai_insights', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'ai_insights',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['entity_type', 'entity_id'], name='idx_insight_entity')],
            },
        ),
        migrations.CreateModel(
            name='ProductForecast',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('forecast_date', models.DateTimeField(db_index=True)),
                ('predicted_usage', models.FloatField(blank=True, null=True)),
                ('horizon_days', models.IntegerField(default=30)),
                ('confidence', models.FloatField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='forecasts', to='catalog.product')),
            ],
            options={
                'db_table': 'product_forecasts',
                'ordering': ['-confidence'],
            },
        ),
    ]
