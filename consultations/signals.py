from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .doctors import bump_shift_version
from .models import DoctorShift


@receiver(post_save, sender=DoctorShift)
@receiver(post_delete, sender=DoctorShift)
def invalidate_doctor_cache(sender, **kwargs):
    # 任何班次写入都让值班医生缓存失效
    bump_shift_version()
