from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("webhooks", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="deadletterentry",
            name="signed_with_default_secret",
            field=models.BooleanField(
                default=True,
                help_text="False when the chain was signed with a per-request secret; replay signs with WEBHOOK_SECRET",
            ),
        ),
    ]
