from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="subscription",
            name="pending_order_id",
            field=models.CharField(
                blank=True,
                default="",
                help_text="Order id sent to the gateway whose outcome is not yet recorded; reused on retry",
                max_length=64,
            ),
        ),
    ]
